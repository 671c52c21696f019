import os

INVENTORY_URL = os.environ.get("INVENTORY_URL", "http://localhost:8001")

# Well below the 5s fault-injection delay, so flagged orders take the queue path.
INVENTORY_DEADLINE_S = float(os.environ.get("INVENTORY_DEADLINE_S", "2"))

LATENCY_WINDOW_S = float(os.environ.get("LATENCY_WINDOW_S", "30"))
LATENCY_SWEEP_INTERVAL_S = float(os.environ.get("LATENCY_SWEEP_INTERVAL_S", "5"))
