"""Experimental data recording and engine JSON-line logs."""
