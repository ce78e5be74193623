"""Escrow dispute engine"""
