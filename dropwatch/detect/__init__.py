"""Drop classifier training and calibration."""
