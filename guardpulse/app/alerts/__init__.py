"""
alerts — Guardian alert fan-out with channel fallback.

Sub-modules:
    channels/        — Per-channel delivery backends (SMS, console, email)
    dispatcher       — Core orchestration: fan-out, SMS → console fallback, audit
    resolver         — Ward → active guardian lookup
    context_builder  — Per-guardian alert context (priority, message, dashboard link)
    audit            — In-memory delivery audit trail
    models           — Data structures shared across the system
"""
