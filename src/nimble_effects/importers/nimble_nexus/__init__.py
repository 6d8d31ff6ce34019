"""
Nimble Nexus (https://nimble.nexus) monster import.
"""
