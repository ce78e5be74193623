"""DisputeFlow - three-phase escrow dispute resolution"""
