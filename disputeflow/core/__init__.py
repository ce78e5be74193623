"""Core utilities"""
