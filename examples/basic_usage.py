#!/usr/bin/env python3
"""
Basic usage example of the speed fusion engine.

This example drives a simulated vehicle through a GPS outage and shows
how IMU, wheel speed, GPS and vision inputs are fed to the engine,
without any hardware dependencies.
"""

import sys
import os
import numpy as np

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from speed_fusion import SpeedFusionEngine, FusionConfig, setup_logging
from speed_fusion.sensors import IMUProcessor, IMUData, GPSSpeedFix, ObdSpeedReading
from speed_fusion.math import ms_to_kph

class SimulationClock:
    """Simulated wall clock, so GNSS outages are detected without waiting."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

def simulate_vehicle_motion(duration=60.0, dt=0.05, gps_outage=(25.0, 40.0), seed=1):
    """
    Simulate a vehicle that accelerates, cruises and brakes.

    Args:
        duration: Simulation duration in seconds
        dt: IMU time step in seconds
        gps_outage: (start, end) of the GPS outage in seconds
        seed: Random seed

    Yields:
        (t, true_speed, imu_data, obd_reading, gps_fix) tuples; the last two
        are None when the sensor has no new sample
    """
    rng = np.random.default_rng(seed)

    # Noise parameters
    accel_noise = 0.15  # m/s²
    gyro_noise = 0.005  # rad/s

    speed = 0.0
    step = 0
    t = 0.0
    while t < duration:
        # Acceleration profile
        if t < 10.0:
            accel = 2.0
        elif t < 45.0:
            accel = 0.0
        else:
            accel = -1.0
        if speed <= 0.0 and accel < 0.0:
            accel = 0.0

        speed = max(0.0, speed + accel * dt)

        imu_data = IMUData(
            accel_x=accel + rng.normal(0, accel_noise),
            accel_y=rng.normal(0, accel_noise),
            accel_z=rng.normal(0, accel_noise),  # calibrated, gravity removed
            gyro_x=rng.normal(0, gyro_noise),
            gyro_y=rng.normal(0, gyro_noise),
            gyro_z=rng.normal(0, gyro_noise),
            timestamp=t
        )

        # Wheel speed at 2 Hz
        obd_reading = None
        if step % 10 == 0:
            obd_reading = ObdSpeedReading(speed_kph=round(ms_to_kph(speed)), timestamp=t)

        # GPS at 1 Hz, silent during the outage
        gps_fix = None
        if step % 20 == 0 and not (gps_outage[0] <= t < gps_outage[1]):
            gps_fix = GPSSpeedFix(speed=max(0.0, speed + rng.normal(0, 0.3)),
                                  accuracy=3.0, timestamp=t)

        yield t, speed, imu_data, obd_reading, gps_fix

        step += 1
        t = step * dt

def main():
    """Main example function."""
    print("Vision Speed Fusion - Basic Usage Example")
    print("=" * 50)

    config = FusionConfig()
    config.set("log_level", "WARNING")
    setup_logging(config)

    clock = SimulationClock()
    engine = SpeedFusionEngine.from_config(config, clock=clock, rng=np.random.default_rng(2))
    imu_processor = IMUProcessor()

    print("Initialized speed fusion engine")
    print(f"Initial state: {engine.get_current_state()}")
    print()

    print("Starting simulation (60 seconds, GPS outage from 25 s to 40 s)...")

    dt = 0.05
    last_print_time = -1.0
    print_interval = 5.0  # Print status every 5 seconds

    for t, true_speed, imu_data, obd_reading, gps_fix in simulate_vehicle_motion(dt=dt):
        clock.now = t

        # Prediction step
        processed_imu = imu_processor.process_data(imu_data, apply_filtering=False)
        accel, gyro = imu_processor.get_prediction_inputs(processed_imu)
        engine.predict(accel, gyro, dt)

        # Measurement updates (when available)
        if obd_reading is not None and obd_reading.is_fresh(now=t):
            engine.fuse_obd_speed(obd_reading.speed_ms)

        if gps_fix is not None and gps_fix.is_valid:
            engine.fuse_gps(gps_fix.speed, gps_fix.accuracy)

        # Vision at 10 Hz
        if round(t / dt) % 2 == 0:
            engine.fuse_vision(ms_to_kph(true_speed), 2 * dt)

        if t - last_print_time >= print_interval:
            print_status(engine, t, true_speed)
            last_print_time = t

    print("\nSimulation completed!")

    # Final statistics
    final_stats = engine.get_statistics()['ekf']
    print("\n=== Final Statistics ===")
    print(f"EKF Predictions: {final_stats['predictions']}")
    print(f"GPS Updates: {final_stats['gps_updates']}")
    print(f"OBD Updates: {final_stats['obd_updates']}")
    print(f"Vision Updates: {final_stats['vision_updates']}")
    print(f"Clamped Innovations: {final_stats['clamped_innovations']}")
    print(f"Final Uncertainty: {final_stats['uncertainty']:.3f}")

def print_status(engine: SpeedFusionEngine, t: float, true_speed: float):
    """Print current system status."""
    state = engine.get_current_state()
    outage = engine.ekf.is_gnss_outage()

    print(f"Time: {t:.1f}s{'  [GNSS OUTAGE]' if outage else ''}")
    print(f"  Velocity: [{state.vx:5.2f}, {state.vy:5.2f}, {state.vz:5.2f}] m/s")
    print(f"  Speed:    {state.speed:5.2f} m/s ({ms_to_kph(state.speed):5.1f} km/h), "
          f"true {true_speed:5.2f} m/s")
    print(f"  Uncertainty: {engine.get_uncertainty():5.3f}")
    print()

if __name__ == "__main__":
    main()
