"""
buffer — Short-lived per-ward sample storage.

Sub-modules:
    pre_incident    — Redis ring buffer of recent location / sensor samples
"""
