"""Request middleware: structured logging, timing, actor resolution."""
