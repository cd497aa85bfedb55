"""DevVelocity core: plan entitlements, usage metering, billing arithmetic and state."""

__version__ = "0.1.0"
