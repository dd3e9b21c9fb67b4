"""
incidents — Incident sources feeding the alert engine.

Sub-modules:
    service     — anomaly detection, manual SOS, thrown-away and fake-shutdown reports
    background  — fire-and-forget runner for detached alert dispatch
"""
