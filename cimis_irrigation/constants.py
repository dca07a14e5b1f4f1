"""
Irrigation Constants
====================
Domain coefficients, ledger formats and MQTT topics shared across the
controller. Values follow the UCANR SLIDE rules and the BMP irrigation
scheduling guide used to size the garden zones.
"""

# ==================== DEMAND COEFFICIENTS ====================

# Gallons of water per inch of depth over one square foot.
GALLONS_PER_INCH_SQFT = 0.623

# Fraction of measured rainfall that actually reaches the root zone
# (runoff and evaporation losses).
PRECIPITATION_EFFECTIVENESS = 0.5

# Drip irrigation delivery efficiency.
DRIP_EFFICIENCY = 0.7

# Irrigation history older than this is not trusted.
MAX_HISTORY_DAYS = 7.0

# ==================== WEATHER ====================

CIMIS_API_URL = "https://et.water.ca.gov/api/data"
DEFAULT_WEATHER_WINDOW_DAYS = 7
WEATHER_CACHE_FILE_TEMPLATE = "weather_{start}_{end}.json"
CIMIS_DATE_FORMAT = "%Y-%m-%d"

# ==================== LEDGER ====================

DEFAULT_LEDGER_PATH = "irrigation_ledger.json"
LEDGER_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ==================== DISPATCH ====================

# Reference firmware shortcut: drip lines treated as 1 gallon per second so
# test runs stay short. A real 1 gal/hr emitter is 3600 * 1000 ms/gallon.
DEFAULT_FLOW_RATE_MS_PER_GALLON = 1000
PRODUCTION_FLOW_RATE_MS_PER_GALLON = 3600 * 1000

# Extra seconds slept after each zone so two relays never overlap.
DEFAULT_WAIT_MARGIN_SECONDS = 1

RELAY_DONE_TOPIC = "/relay_done"
DEFAULT_CONTROLLER_TOPICS = {1: "/back_yard"}
MQTT_CLIENT_ID = "irrig_calculator"
