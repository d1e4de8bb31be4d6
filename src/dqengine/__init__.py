"""dqengine - data-quality metrics engine.

Mergeable analyzer states, approximate sketches, multi-pass column
profiling, incremental partition processing and anomaly detection.
"""

__version__ = "0.1.0"
