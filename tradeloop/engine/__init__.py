"""Analytics, detectors, risk gate, dispatcher and scheduler for the tick loop."""
