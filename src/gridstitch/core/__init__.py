"""Grid data model, transform estimation and compositing"""
