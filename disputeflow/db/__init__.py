"""Database layer"""
