"""Off-peak OCPP 1.6 central system for a home charging station."""
