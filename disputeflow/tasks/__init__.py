"""Background task helpers"""
