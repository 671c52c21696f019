import os

# Fault injection: how long a flagged fulfillment call stalls.
FAULT_DELAY_S = float(os.environ.get("FAULT_DELAY_S", "5"))

SEED_ON_STARTUP = os.environ.get("SEED_ON_STARTUP", "1") == "1"

SEED_PRODUCTS = [
    ("quantum-processor", "Quantum Processor", 100),
    ("neural-interface", "Neural Interface", 50),
    ("flux-capacitor", "Flux Capacitor", 20),
    ("hyperdrive-unit", "Hyperdrive Unit", 10),
]
