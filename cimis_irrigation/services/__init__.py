"""
Service Organization
====================
Services wire the domain to the outside world for one irrigation run:

- weather_service: CIMIS HTTP client with the on-disk response cache
- zone_ledger: irrigation ledger load / commit
- completion_tracker: relay completion notices from the MQTT thread
- dispatch_sequencer: sequential relay activation
- irrigation_run: the end-to-end daily run
"""
