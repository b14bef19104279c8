"""HostPulse command line application."""
