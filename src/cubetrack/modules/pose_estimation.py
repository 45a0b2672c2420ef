import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor

import cv2
import numpy as np
import pyceres

from cubetrack.config.config import TrackingConfig
from cubetrack.datatypes import KeyFrame
from cubetrack.geometry import t_from_rt

logger = logging.getLogger(__name__)


def rotation_angle(R: np.ndarray) -> float:
    """Angle of a rotation matrix in radians."""
    cos = (np.trace(R) - 1.0) / 2.0
    return float(np.arccos(np.clip(cos, -1.0, 1.0)))


def translation_dist(t: np.ndarray) -> float:
    return float(np.linalg.norm(t))


def sample_bilinear(image: np.ndarray, pts: np.ndarray) -> np.ndarray:
    """
    Bilinearly sample an image at sub-pixel locations.

    Locations are clamped to the image, so callers mask out-of-bounds points.
    The image is read in place, only the four neighbours of each location
    are converted to float.

    Args:
        image: (H, W) or (H, W, C) image.
        pts: (N, 2) locations [u, v].

    Returns:
        (N, C) float samples.

    """
    img = np.asarray(image)
    if img.ndim == 2:
        img = img[:, :, np.newaxis]
    h, w = img.shape[:2]

    u = np.clip(pts[:, 0], 0.0, w - 1.0)
    v = np.clip(pts[:, 1], 0.0, h - 1.0)
    u0 = np.clip(np.floor(u).astype(int), 0, max(w - 2, 0))
    v0 = np.clip(np.floor(v).astype(int), 0, max(h - 2, 0))
    u1 = np.minimum(u0 + 1, w - 1)
    v1 = np.minimum(v0 + 1, h - 1)
    du = (u - u0)[:, np.newaxis]
    dv = (v - v0)[:, np.newaxis]

    top = img[v0, u0].astype(np.float64) * (1 - du) + img[v0, u1] * du
    bottom = img[v1, u0].astype(np.float64) * (1 - du) + img[v1, u1] * du
    return top * (1 - dv) + bottom * dv


def project_depth_points(
    depth: np.ndarray,
    rays: np.ndarray,
    R: np.ndarray,
    t: np.ndarray,
    K: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Project back-projected points into the current frame.

    Args:
        depth: (N,) depth along each ray.
        rays: (N, 3) normalized rays inv_K @ [u, v, 1].
        R: 3x3 relative rotation.
        t: (3,) relative translation.
        K: 3x3 camera matrix.

    Returns:
        (N, 2) pixel locations and (N,) camera frame depth.

    """
    X_cam = (depth[:, np.newaxis] * rays) @ R.T + t
    proj = X_cam @ K.T
    z = proj[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        px = proj[:, :2] / z[:, np.newaxis]
    return px, X_cam[:, 2]


def in_image(px: np.ndarray, z: np.ndarray, shape: tuple[int, ...]) -> np.ndarray:
    """Points in front of the camera that can be bilinearly sampled."""
    h, w = shape[:2]
    return (
        (z > 0)
        & np.isfinite(px).all(axis=1)
        & (px[:, 0] >= 0)
        & (px[:, 0] <= w - 1)
        & (px[:, 1] >= 0)
        & (px[:, 1] <= h - 1)
    )


def photometric_residuals(
    image: np.ndarray,
    K: np.ndarray,
    inv_K: np.ndarray,
    ref_kf: KeyFrame,
    rvec: np.ndarray,
    tvec: np.ndarray,
    camera_pixel_noise2: float,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Depth uncertainty aware photometric residual of every reference point.

    Each point is projected with its depth and with its depth plus one
    standard deviation. The color change between the two projections
    estimates how sensitive the point is to depth error, and the raw color
    error is whitened by it together with the pixel noise.

    Args:
        image: Current color image.
        K: 3x3 camera matrix.
        inv_K: Inverse camera matrix.
        ref_kf: Reference keyframe with its high gradient points.
        rvec: (3,) axis-angle rotation reference -> current.
        tvec: (3,) translation reference -> current.
        camera_pixel_noise2: Pixel noise variance.

    Returns:
        residuals: (N,) whitened residuals, invalid points hold the mean.
        valid: (N,) mask of points whose projections landed in the image.

    """
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    t = np.asarray(tvec, dtype=np.float64).ravel()

    rays = ref_kf.high_grad_homo @ inv_K.T
    px, z = project_depth_points(ref_kf.high_grad_depth, rays, R, t, K)
    px_right, z_right = project_depth_points(ref_kf.depth_plus_sigma, rays, R, t, K)

    valid = in_image(px, z, image.shape) & in_image(px_right, z_right, image.shape)

    px = np.where(valid[:, np.newaxis], px, 0.0)
    px_right = np.where(valid[:, np.newaxis], px_right, 0.0)
    pixels = sample_bilinear(image, px)
    pixels_right = sample_bilinear(image, px_right)

    ref = ref_kf.high_grad_pixels.astype(np.float64).reshape(len(valid), -1)
    res = np.linalg.norm(ref - pixels, axis=1)
    res_right = np.linalg.norm(ref - pixels_right, axis=1)

    sigma = np.sqrt((res_right - res) ** 2 + 2.0 * camera_pixel_noise2)
    reg_res = res / np.maximum(sigma, np.finfo(np.float64).eps)

    # invalid points take the mean so the residual size stays fixed
    mean_res = float(reg_res[valid].mean()) if np.any(valid) else 0.0
    reg_res[~valid] = mean_res

    return reg_res, valid


class PhotometricCost(pyceres.CostFunction):
    """
    Photometric residual block over the fixed-size reference point set.

    Parameter blocks are the axis-angle rotation (3) and the translation (3).
    Jacobians come from central differences since pixel sampling and the
    validity branching have no usable analytic derivative.
    """

    def __init__(
        self,
        image: np.ndarray,
        K: np.ndarray,
        inv_K: np.ndarray,
        ref_kf: KeyFrame,
        camera_pixel_noise2: float,
        step: float,
        executor: Executor | None = None,
    ):
        super().__init__()
        self.set_num_residuals(ref_kf.num_points)
        self.set_parameter_block_sizes([3, 3])
        # converted once, every residual evaluation samples this array
        self.image = np.asarray(image, dtype=np.float64)
        self.K = K
        self.inv_K = inv_K
        self.ref_kf = ref_kf
        self.camera_pixel_noise2 = camera_pixel_noise2
        self.step = step
        self.executor = executor

    def residuals(self, r: np.ndarray, t: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        return photometric_residuals(
            self.image,
            self.K,
            self.inv_K,
            self.ref_kf,
            r,
            t,
            self.camera_pixel_noise2,
        )

    def _central_difference(self, r: np.ndarray, t: np.ndarray) -> np.ndarray:
        """(N, 6) jacobian w.r.t. [r, t]."""
        x = np.concatenate([r, t])
        probes = []
        for j in range(6):
            d = np.zeros(6)
            d[j] = self.step
            probes.append(x + d)
            probes.append(x - d)

        def evaluate(p: np.ndarray) -> np.ndarray:
            return self.residuals(p[:3], p[3:])[0]

        if self.executor is None:
            values = [evaluate(p) for p in probes]
        else:
            values = list(self.executor.map(evaluate, probes))

        J = np.empty((len(values[0]), 6))
        for j in range(6):
            J[:, j] = (values[2 * j] - values[2 * j + 1]) / (2.0 * self.step)
        return J

    def Evaluate(self, parameters, residuals, jacobians):
        r, t = parameters[0], parameters[1]
        if r.dtype not in (np.float64, np.float32) or t.dtype not in (
            np.float64,
            np.float32,
        ):
            # unsupported scalar type, the solver discards this evaluation
            return False

        r = r.astype(np.float64)
        t = t.astype(np.float64)
        res, valid = self.residuals(r, t)
        if not np.any(valid) or not np.all(np.isfinite(res)):
            # nothing left in view, reject this trial step
            return False
        residuals[:] = res

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "angle %.6f t %s cost %.6f",
                np.linalg.norm(r),
                np.round(t, 6),
                float(res @ res),
            )

        if jacobians is not None:
            J = self._central_difference(r, t)
            if jacobians[0] is not None:
                jacobians[0][:] = J[:, :3].ravel()
            if jacobians[1] is not None:
                jacobians[1][:] = J[:, 3:].ravel()

        return True


def estimate_camera_pose(
    image: np.ndarray,
    K: np.ndarray,
    inv_K: np.ndarray,
    ref_kf: KeyFrame,
    camera_pixel_noise2: float,
    max_seconds: float,
    config: TrackingConfig | None = None,
) -> tuple[np.ndarray, float, float, float, float]:
    """
    Direct photometric estimation of the current camera pose.

    Solves for the relative motion reference -> current that best explains
    the colors of the reference keyframe's high gradient points in the
    current image, then composes it with the keyframe pose.

    Args:
        image: Current color image (H, W, 3).
        K: 3x3 camera matrix.
        inv_K: Inverse camera matrix.
        ref_kf: Reference keyframe.
        camera_pixel_noise2: Pixel noise variance.
        max_seconds: Hard wall-clock budget of the solver.
        config: Tracking configuration.

    Returns:
        T_cw: Current World-to-Camera pose (4x4).
        residual_scale: Final solver cost per point.
        rot_angle: Angle of the relative rotation (radians).
        trans_dist: Norm of the relative translation.
        valid_ratio: Fraction of points projecting into the image.

    """
    cfg = config or TrackingConfig()

    if ref_kf.num_points == 0:
        logger.warning("Reference keyframe %d has no points", ref_kf.frame_id)
        return ref_kf.get_pose(), 0.0, 0.0, 0.0, 0.0

    # start from no motion
    rel_rotation = np.zeros(3, dtype=np.float64)
    rel_translation = np.zeros(3, dtype=np.float64)
    num_threads = os.cpu_count() or 1

    with ThreadPoolExecutor(max_workers=num_threads) as executor:
        cost = PhotometricCost(
            image,
            K,
            inv_K,
            ref_kf,
            camera_pixel_noise2,
            cfg.numeric_diff_step,
            executor,
        )
        problem = pyceres.Problem()
        problem.add_residual_block(
            cost, pyceres.HuberLoss(cfg.huber_delta), [rel_rotation, rel_translation]
        )

        options = pyceres.SolverOptions()
        options.linear_solver_type = pyceres.LinearSolverType.DENSE_QR
        options.num_threads = num_threads
        options.max_solver_time_in_seconds = max(0.0, float(max_seconds))
        options.max_num_iterations = cfg.max_num_iterations
        options.minimizer_progress_to_stdout = False

        summary = pyceres.SolverSummary()
        logger.debug("Solving with %d points...", ref_kf.num_points)
        pyceres.solve(options, problem, summary)

    final_cost = max(float(summary.final_cost), 0.0)
    logger.debug("Solver finished with final cost %.6f", final_cost)

    R_rel, _ = cv2.Rodrigues(rel_rotation.reshape(3, 1))
    T_rel = t_from_rt(R_rel, rel_translation)
    T_cw = T_rel @ ref_kf.get_pose()

    rays = ref_kf.high_grad_homo @ inv_K.T
    px, z = project_depth_points(
        ref_kf.high_grad_depth, rays, R_rel, rel_translation, K
    )
    valid_ratio = float(np.mean(in_image(px, z, image.shape)))

    return (
        T_cw,
        final_cost / ref_kf.num_points,
        rotation_angle(R_rel),
        translation_dist(rel_translation),
        valid_ratio,
    )
