"""Drop-signal detection: candidate URL liveness checks and drop classifier calibration."""
