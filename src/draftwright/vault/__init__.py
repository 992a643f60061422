"""The document store, its change notifications and the watchdog-backed watcher."""
