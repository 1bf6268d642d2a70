"""
Significance testing for experiment metrics
"""
import math

from scipy.stats import norm

from hybrid_recommender.models.experiment import SignificanceResult


def two_proportion_z_test(metric: str,
                          control_rate: float, control_n: int,
                          treatment_rate: float, treatment_n: int,
                          min_sample_size: int = 30,
                          alpha: float = 0.05,
                          confidence_level: float = 0.95) -> SignificanceResult:
    """
    Two-sided z-test for a difference between two proportions

    Args:
        metric: Metric name carried into the result
        control_rate: Observed proportion in control
        control_n: Control sample size
        treatment_rate: Observed proportion in treatment
        treatment_n: Treatment sample size
        min_sample_size: Either group below this yields an insufficient-sample result
        alpha: Significance threshold for the p-value
        confidence_level: Level of the interval on the difference

    Returns:
        SignificanceResult with z, p-value, effect, relative improvement and
        the confidence interval of treatment minus control
    """
    if control_n < min_sample_size or treatment_n < min_sample_size:
        return SignificanceResult(metric=metric, is_significant=False,
                                  reason="insufficient sample")

    p1 = control_rate
    p2 = treatment_rate
    effect = p2 - p1
    improvement = (effect / p1) * 100 if p1 > 0 else None

    pooled = (p1 * control_n + p2 * treatment_n) / (control_n + treatment_n)
    standard_error = math.sqrt(pooled * (1 - pooled) * (1 / control_n + 1 / treatment_n))
    if standard_error == 0:
        return SignificanceResult(metric=metric, is_significant=False, p_value=1.0,
                                  z_score=0.0, effect=effect, improvement=improvement,
                                  reason="no variation")

    z_score = abs(effect) / standard_error
    # survival function keeps precision for large z
    p_value = float(2 * norm.sf(z_score))

    se_diff = math.sqrt(p1 * (1 - p1) / control_n + p2 * (1 - p2) / treatment_n)
    margin = float(norm.ppf(1 - (1 - confidence_level) / 2)) * se_diff

    return SignificanceResult(
        metric=metric,
        is_significant=p_value < alpha,
        p_value=p_value,
        z_score=float(z_score),
        effect=effect,
        improvement=improvement,
        confidence_interval=(effect - margin, effect + margin),
    )
