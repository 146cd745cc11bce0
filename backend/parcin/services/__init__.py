# Services layer for reservation, payment and notification logic
