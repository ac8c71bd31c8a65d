#!/usr/bin/env python3

import argparse
import os

import matplotlib.pyplot as plt
import numpy as np

from workout_metrics import (
    DEFAULT_FTP,
    compute_metrics_from_segments,
    format_duration_min_sec,
    infer_zone_from_segments,
    zone_from_relative,
)
from zwo_parser import load_zwo_file


class ZWOWorkoutVisualizer:
    """Visualize ZWO workout files with power profiles and step details"""

    def __init__(self, ftp: int = DEFAULT_FTP):
        self.ftp = ftp
        self.zone_colors = {
            "Recovery": "#96CEB4",
            "Endurance": "#45B7D1",
            "Tempo": "#FFD166",
            "Threshold": "#F4A261",
            "VO2Max": "#FF6B6B",
            "Anaerobic": "#9B5DE5",
        }
        self.freeride_color = "#B0B0B0"

    def create_power_profile(self, raw_segments):
        """Create time series data (seconds, watts) for a power profile"""
        if not raw_segments:
            return np.array([0.0]), np.array([0.0])

        time_points = []
        power_points = []
        current_time = 0.0

        for segment in raw_segments:
            end_time = current_time + segment.duration_sec
            time_points.extend([current_time, end_time])
            power_points.extend([
                segment.start_pct / 100 * self.ftp,
                segment.end_pct / 100 * self.ftp,
            ])
            current_time = end_time

        return np.array(time_points), np.array(power_points)

    def segment_color(self, segment):
        if segment.freeride:
            return self.freeride_color
        average_rel = (segment.start_pct + segment.end_pct) / 200
        return self.zone_colors[zone_from_relative(average_rel)]

    def describe_segment(self, segment):
        """One-line description of a segment for the step table"""
        if segment.freeride:
            kind = "FreeRide"
            power_str = "free ride"
        elif abs(segment.start_pct - segment.end_pct) < 1e-6:
            kind = "Steady"
            power_str = f"{segment.start_pct:.0f}% FTP ({segment.start_pct / 100 * self.ftp:.0f}W)"
        else:
            kind = "Warmup" if segment.end_pct > segment.start_pct else "Cooldown"
            power_str = (
                f"{segment.start_pct:.0f}-{segment.end_pct:.0f}% FTP "
                f"({segment.start_pct / 100 * self.ftp:.0f}-{segment.end_pct / 100 * self.ftp:.0f}W)"
            )

        seconds = int(round(segment.duration_sec))
        duration_str = f"{seconds // 60}:{seconds % 60:02d}"
        cadence_str = f" @ {segment.cadence_rpm:.0f} rpm" if segment.cadence_rpm is not None else ""
        return f"{kind:<8} | {duration_str} | {power_str}{cadence_str}"

    def plot_zwo_workout(self, zwo_path: str, save_path: str = None, show_plot: bool = True):
        """Display ZWO workout visualization and details"""
        workout = load_zwo_file(zwo_path)
        segments = workout.raw_segments

        if not segments:
            print("No segments found")
            return

        metrics = compute_metrics_from_segments(segments, self.ftp)
        title = workout.workout_title or os.path.basename(zwo_path)

        print(f"\n{title} (ZWO)")
        if workout.source:
            print(f"Author: {workout.source}")
        print(f"Duration: {format_duration_min_sec(metrics.total_sec)}")
        print(f"Steps: {len(segments)}")
        print(f"Zone: {infer_zone_from_segments(segments)}")
        if metrics.tss is not None:
            print(f"IF: {metrics.if_value:.2f}  TSS: {metrics.tss:.0f}  Work: {metrics.kj:.0f} kJ")

        if show_plot or save_path:
            fig, ax_power = plt.subplots(figsize=(14, 6))

            time_data, power_data = self.create_power_profile(segments)
            time_minutes = time_data / 60

            ax_power.plot(
                time_minutes,
                power_data,
                "k-",
                linewidth=2.5,
                label="Target Power",
                zorder=3,
            )

            current_time = 0.0
            for segment in segments:
                start_min = current_time / 60
                end_min = (current_time + segment.duration_sec) / 60
                ax_power.axvspan(
                    start_min, end_min, alpha=0.3, color=self.segment_color(segment), zorder=1
                )
                current_time += segment.duration_sec

            ax_power.axhline(
                y=self.ftp,
                color="red",
                linestyle="--",
                alpha=0.7,
                label=f"FTP ({self.ftp}W)",
                zorder=1,
            )

            for event in workout.text_events:
                ax_power.axvline(x=event.offset_sec / 60, color="#555555", alpha=0.4, linewidth=0.8)

            ax_power.set_xlabel("Time (minutes)", fontsize=12)
            ax_power.set_ylabel("Power (watts)", fontsize=12)
            ax_power.set_title(f"{title} - Power Profile Over Time", fontsize=14, fontweight="bold")
            ax_power.grid(True, alpha=0.3)
            ax_power.legend()

            if len(power_data) > 0:
                ax_power.set_ylim(0, max(float(np.max(power_data)), self.ftp) * 1.1)

            plt.tight_layout()

            if save_path:
                plt.savefig(save_path, dpi=300, bbox_inches="tight")
                print(f"ZWO workout visualization saved to: {save_path}")

            if show_plot:
                plt.show()
            plt.close(fig)

        print("\nSTEP DETAILS:")
        print("-" * 80)
        for i, segment in enumerate(segments):
            print(f"{i + 1:2d}. {self.describe_segment(segment)}")
        print("-" * 80)

        if workout.text_events:
            print("\nTEXT EVENTS:")
            for event in workout.text_events:
                print(f"  {event.offset_sec // 60}:{event.offset_sec % 60:02d}  {event.text}")


def main():
    parser = argparse.ArgumentParser(description="Visualize ZWO workout files")
    parser.add_argument("file", help="ZWO file to visualize")
    parser.add_argument(
        "--ftp",
        type=int,
        default=DEFAULT_FTP,
        help=f"Functional Threshold Power in watts (default: {DEFAULT_FTP})",
    )
    parser.add_argument("--output", "-o", help="Save visualization to file (PNG/PDF)")
    parser.add_argument("--no-show", action="store_true", help="Don't display the plot")

    args = parser.parse_args()

    if not os.path.exists(args.file):
        print(f"Error: File {args.file} not found")
        return

    visualizer = ZWOWorkoutVisualizer(ftp=args.ftp)
    visualizer.plot_zwo_workout(args.file, save_path=args.output, show_plot=not args.no_show)


if __name__ == "__main__":
    main()
