# Ambient utilities: logging setup, config checks, rate limiting, sanitization
