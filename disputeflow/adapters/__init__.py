"""Adapters to the services around the dispute engine"""
