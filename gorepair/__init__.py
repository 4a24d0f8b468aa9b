"""GoRepair booking core backend"""
