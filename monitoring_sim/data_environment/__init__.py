"""Data environment: the five simulation stages and the panel pipeline in simulate_panel."""
