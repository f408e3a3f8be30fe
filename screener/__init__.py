"""Signal clarity screening, multi-timeframe alignment and outcome calibration."""
