#!/usr/bin/env python3
"""
simulate_drive.py

Scenario runner for the speed fusion engine. A ground truth speed profile
is turned into synthetic IMU, wheel speed, GPS and vision inputs; the
engine estimate is logged against the truth and optionally plotted.

Usage:
    python tools/simulate_drive.py --duration 120 --outage 40 70

Use the --help flag for the full set of options.
"""

from __future__ import annotations

import argparse
import csv
import logging
import os
import sys
import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from speed_fusion import SpeedFusionEngine, FusionConfig, setup_logging
from speed_fusion.math import kph_to_ms, ms_to_kph

logger = logging.getLogger("speed_fusion.tools.simulate_drive")

@dataclass
class DriveSimulator:
    """Synthetic sensors for a vehicle following a speed profile.

    Parameters:
        accel_noise_std (float): Accelerometer white noise (m/s^2).
        gyro_noise_std (float): Gyroscope white noise (rad/s).
        accel_bias (float): Constant forward accelerometer bias (m/s^2).
        gps_noise_std (float): GPS speed noise (m/s).
        gps_rate (float): GPS rate in Hz, 0 disables GPS.
        obd_rate (float): Wheel speed rate in Hz, 0 disables wheel speed.
        vision_rate (float): Vision rate in Hz, 0 disables vision.
        outage (Tuple[float, float]): GPS outage window (start, end) in seconds.
        random_state (Optional[np.random.Generator]): Random generator for reproducibility.
    """
    accel_noise_std: float = 0.2
    gyro_noise_std: float = 0.005
    accel_bias: float = 0.05
    gps_noise_std: float = 0.3
    gps_rate: float = 1.0
    obd_rate: float = 2.0
    vision_rate: float = 10.0
    outage: Tuple[float, float] = (0.0, 0.0)
    random_state: Optional[np.random.Generator] = field(default=None)

    def __post_init__(self):
        self.rng = self.random_state if self.random_state is not None else np.random.default_rng()

    @staticmethod
    def target_acceleration(t: float, duration: float) -> float:
        """Accelerate for the first sixth of the drive, cruise, then brake for the last sixth."""
        phase = duration / 6.0
        if t < phase:
            return 2.5
        if t > duration - phase:
            return -2.5
        return 0.0

    def in_outage(self, t: float) -> bool:
        return self.outage[0] <= t < self.outage[1]

    @staticmethod
    def due(step: int, dt: float, rate: float) -> bool:
        if rate <= 0:
            return False
        interval = max(1, int(round(1.0 / (rate * dt))))
        return step % interval == 0

    def measure_imu(self, accel: float) -> Tuple[np.ndarray, np.ndarray]:
        """Body-frame accelerometer and gyroscope readings for straight driving."""
        accel_meas = np.array([accel + self.accel_bias, 0.0, 0.0]) + \
            self.rng.normal(scale=self.accel_noise_std, size=3)
        gyro_meas = self.rng.normal(scale=self.gyro_noise_std, size=3)
        return accel_meas, gyro_meas

    def measure_gps(self, speed: float) -> float:
        return max(0.0, speed + self.rng.normal(scale=self.gps_noise_std))

@dataclass
class DriveLog:
    """Per-step record of truth and estimate."""
    time_log: List[float] = field(default_factory=list)
    speed_true: List[float] = field(default_factory=list)
    speed_est: List[float] = field(default_factory=list)
    uncertainty: List[float] = field(default_factory=list)
    outage: List[bool] = field(default_factory=list)

    def append(self, t: float, true_speed: float, est_speed: float,
               uncertainty: float, outage: bool) -> None:
        self.time_log.append(t)
        self.speed_true.append(true_speed)
        self.speed_est.append(est_speed)
        self.uncertainty.append(uncertainty)
        self.outage.append(outage)

    def rms_error(self) -> float:
        error = np.asarray(self.speed_est) - np.asarray(self.speed_true)
        return float(np.sqrt(np.mean(error ** 2))) if error.size else 0.0

    def write_csv(self, path: str) -> None:
        with open(path, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['time_s', 'true_speed_ms', 'est_speed_ms', 'uncertainty', 'gnss_outage'])
            for row in zip(self.time_log, self.speed_true, self.speed_est,
                           self.uncertainty, self.outage):
                writer.writerow(row)

def run_simulation(dt: float, duration: float, outage: Tuple[float, float],
                   lighting: float, config: FusionConfig, seed: int) -> DriveLog:
    """Execute the drive and return the log.

    Args:
        dt (float): IMU time step in seconds.
        duration (float): Drive duration in seconds.
        outage (Tuple[float, float]): GPS outage window in seconds.
        lighting (float): Lighting quality for simulated vision in [0, 1].
        config (FusionConfig): Engine configuration.
        seed (int): Random seed.
    """
    sim_time = 0.0
    engine = SpeedFusionEngine.from_config(config, clock=lambda: sim_time,
                                           rng=np.random.default_rng(seed + 1))
    sensor = DriveSimulator(outage=outage, random_state=np.random.default_rng(seed))
    log = DriveLog()

    speed = 0.0
    step = 0
    while sim_time < duration:
        accel = sensor.target_acceleration(sim_time, duration)
        if speed <= 0.0 and accel < 0.0:
            accel = 0.0
        speed = max(0.0, speed + accel * dt)

        accel_meas, gyro_meas = sensor.measure_imu(accel)
        engine.predict(accel_meas, gyro_meas, dt)

        if sensor.due(step, dt, sensor.obd_rate):
            engine.fuse_obd_speed(kph_to_ms(round(ms_to_kph(speed))))

        if sensor.due(step, dt, sensor.gps_rate) and not sensor.in_outage(sim_time):
            engine.fuse_gps(sensor.measure_gps(speed), accuracy=3.0)

        if sensor.due(step, dt, sensor.vision_rate):
            engine.fuse_vision(ms_to_kph(speed), 1.0 / sensor.vision_rate, lighting)

        log.append(sim_time, speed, engine.get_estimated_speed(),
                   engine.get_uncertainty(), engine.ekf.is_gnss_outage())

        step += 1
        sim_time = step * dt

    logger.info("Drive finished: %s", engine.get_statistics()['ekf'])
    return log

def plot_log(log: DriveLog, output: Optional[str] = None) -> None:
    """Plot true and fused speed with the filter uncertainty."""
    import matplotlib.pyplot as plt

    t = np.asarray(log.time_log)
    outage = np.asarray(log.outage)

    fig, (ax_speed, ax_unc) = plt.subplots(2, 1, figsize=(10, 8), sharex=True)
    ax_speed.set_title("Speed")
    ax_speed.set_ylabel("Speed (m/s)")
    ax_speed.plot(t, log.speed_true, label="True Speed")
    ax_speed.plot(t, log.speed_est, label="Fused Speed", linestyle='--')
    ax_speed.fill_between(t, 0, max(log.speed_true + [1.0]), where=outage,
                          color='grey', alpha=0.2, label="GNSS outage")
    ax_speed.legend()

    ax_unc.set_title("Covariance Trace")
    ax_unc.set_xlabel("Time (s)")
    ax_unc.set_ylabel("trace(P)")
    ax_unc.plot(t, log.uncertainty)
    plt.tight_layout()

    if output:
        fig.savefig(output)
        print(f"Saved plot to {output}")
    else:
        plt.show()

def main() -> None:
    """Entry point when running this module as a script."""
    parser = argparse.ArgumentParser(description="Speed fusion drive simulation")
    parser.add_argument('--dt', type=float, default=0.05, help='IMU time step in seconds (default: 0.05s)')
    parser.add_argument('--duration', type=float, default=120.0, help='Drive duration in seconds (default: 120s)')
    parser.add_argument('--outage', type=float, nargs=2, default=[40.0, 70.0], metavar=('START', 'END'),
                        help='GPS outage window in seconds (default: 40 70)')
    parser.add_argument('--lighting', type=float, default=0.95, help='Vision lighting quality in [0, 1]')
    parser.add_argument('--config', type=str, default=None, help='JSON configuration file')
    parser.add_argument('--seed', type=int, default=0, help='Random seed')
    parser.add_argument('--csv', type=str, default=None, help='Write the drive log to a CSV file')
    parser.add_argument('--plot', type=str, default=None, metavar='PNG', help='Save the plot instead of showing it')
    parser.add_argument('--no-plotting', action='store_true', help='Disable plotting.')
    args = parser.parse_args()

    config = FusionConfig(args.config)
    setup_logging(config)

    log = run_simulation(dt=args.dt, duration=args.duration, outage=tuple(args.outage),
                         lighting=args.lighting, config=config, seed=args.seed)
    print(f"RMS speed error: {log.rms_error():.3f} m/s over {len(log.time_log)} steps")

    if args.csv:
        log.write_csv(args.csv)
    if not args.no_plotting:
        plot_log(log, args.plot)

if __name__ == "__main__":
    main()
