"""Feature detection, matching and the feature pipeline used for alignment"""
