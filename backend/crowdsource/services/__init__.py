"""Crowdsource Engine - Services"""
