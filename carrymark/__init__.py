"""
Carry Mark: composite scoring for student assessments, assignments and attendance.

Derives one per-subject, per-term carry mark and letter grade for every
(student, class, subject, term, academic year) key, with manual override
support and safe concurrent recomputation.
"""

__version__ = "1.0.0"
__author__ = "Carry Mark Development Team"
__description__ = "Composite carry mark scoring platform"
