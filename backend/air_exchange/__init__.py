"""Air Exchange: real-time file and text sharing relay."""
