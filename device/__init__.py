"""Device-side firmware logic for a SmartBin."""
