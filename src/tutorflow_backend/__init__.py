'''
TutorFlow backend: recurring classes, class exceptions and the
cancellation policy for the TutorFlow tutoring platform.
'''
__version__ = "0.4.0"
