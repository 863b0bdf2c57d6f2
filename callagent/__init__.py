"""Conversation core for the AI call agent.

Drives a lead through greeting, data collection, confirmation and booking
over a series of HTTP turns, persisting each session between turns.
"""
