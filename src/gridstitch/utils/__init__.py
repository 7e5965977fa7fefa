"""Configuration, logging and map file helpers"""
