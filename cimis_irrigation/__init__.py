"""
CIMIS Irrigation Controller
===========================
Daily drip-irrigation controller: computes each garden zone's water demand
from CIMIS evapotranspiration and precipitation, waters the zones one at a
time through MQTT relay controllers, and keeps a ledger of what was applied.
"""

__version__ = "1.0.0"
