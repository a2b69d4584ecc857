"""Crowdsource Engine - Problem Lifecycle & Geo-Verification"""
