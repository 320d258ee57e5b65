DB_SCHEMA = "relayguard"
