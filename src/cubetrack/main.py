import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import cv2
import numpy as np
import tyro

from cubetrack.config.config import get_config
from cubetrack.dataset_loader import SyntheticDataset
from cubetrack.modules.pose_estimation import estimate_camera_pose, rotation_angle
from cubetrack.modules.utils import camera_center, save_trajectory
from cubetrack.state.landmark import Landmark
from cubetrack.viz import init_rerun, log_frame_rerun


@dataclass
class Args:
    preset: Literal["tum", "kitti", "synthetic"] = "synthetic"
    max_seconds: float | None = None
    overlay: Path | None = None
    trajectory: Path | None = None
    headless: bool = True
    verbose: bool = False


def main(args: Args) -> dict:
    """Track a synthetic frame against its keyframe and project its object."""
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    cfg = get_config(args.preset)
    max_seconds = cfg.max_seconds if args.max_seconds is None else args.max_seconds

    print(f"Rendering synthetic scene ({args.preset} preset)...")
    dataset = SyntheticDataset(config=cfg)
    kf = dataset.keyframe
    print(f"Keyframe {kf.frame_id}: {kf.num_points} high gradient points")

    T_cw, residual_scale, rot_angle, trans_dist, valid_ratio = estimate_camera_pose(
        dataset.cur_image,
        dataset.K,
        kf.inv_K,
        kf,
        cfg.camera_pixel_noise2,
        max_seconds,
        cfg,
    )

    T_err = T_cw @ np.linalg.inv(dataset.T_cw_cur)
    rot_err = rotation_angle(T_err[:3, :3])
    trans_err = float(np.linalg.norm(T_err[:3, 3]))
    print(
        f"Residual: {residual_scale:.4f} | "
        f"Angle: {np.degrees(rot_angle):.3f} deg | "
        f"Distance: {trans_dist:.4f} | "
        f"Valid: {valid_ratio:.2f} | "
        f"Rot err: {np.degrees(rot_err):.3f} deg | "
        f"Trans err: {trans_err:.4f}"
    )

    proposal, bbox = dataset.make_proposal()
    landmark = Landmark.from_proposal(proposal, bbox, kf, kf.inv_K, 0, cfg)
    cuboid = landmark.project(T_cw, dataset.K)
    dims = landmark.get_dimension()
    print(
        f"Landmark {landmark.landmark_id}: "
        f"dims ({dims.width:.3f}, {dims.height:.3f}, {dims.length:.3f}) | "
        f"quality {landmark.meas_quality:.2f} | "
        f"projection valid: {cuboid.valid}"
    )

    if args.overlay is not None:
        canvas = np.clip(dataset.cur_image, 0, 255).astype(np.uint8)
        cuboid.draw(canvas, dataset.K, (0, 255, 0), cfg.axis_tick_length)
        cv2.imwrite(str(args.overlay), canvas)
        print(f"Wrote overlay to {args.overlay}")

    if args.trajectory is not None:
        save_trajectory([kf.get_pose(), T_cw], [0.0, 1.0], str(args.trajectory))

    if not args.headless:
        init_rerun()
        history = [camera_center(kf.get_pose())]
        log_frame_rerun(dataset.ref_image, kf.get_pose(), dataset.K, 0, [landmark], history)
        history.append(camera_center(T_cw))
        log_frame_rerun(dataset.cur_image, T_cw, dataset.K, 1, [landmark], history)

    print("Done.")
    return {
        "T_cw": T_cw,
        "residual_scale": residual_scale,
        "valid_ratio": valid_ratio,
        "rot_err": rot_err,
        "trans_err": trans_err,
        "cuboid": cuboid,
    }


def cli() -> None:
    main(tyro.cli(Args))


if __name__ == "__main__":
    cli()
