"""Sample macOS performance counters and feed them to SketchyBar."""
