"""
Epistemic GLMM — Test Suite
===========================

Test modules:
- test_survey_data.py: loading, feature transformation, prediction grid
- test_frequentist.py: ML fitting, prediction, parametric bootstrap
- test_bayesian.py: MCMC fitting and posterior predictions (slow)
- test_plotting.py: interval bands and figures
- test_workflow.py: end-to-end comparison run (slow)
"""

__version__ = '0.1.0'
