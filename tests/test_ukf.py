"""Tests for the UKF predict and update steps.

Tests cover:
- Exactness against the closed-form linear Kalman filter
- The constant-velocity predict/update scenario to 1e-9
- Control model offset and noise
- Single measurement update behaviour and diagnostics
- Probabilistic data association update, including its reduction to the
  single measurement update
- Configuration, dimension and numerical error reporting
- JIT and jax.lax.scan compatibility
"""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from sigmajax.errors import (
    ConfigurationError,
    DimensionMismatchError,
    NumericalInstabilityError,
)
from sigmajax.estimation import (
    CubatureSigmaPoints,
    FilterResult,
    FilterState,
    UKFConfig,
    UKFPrediction,
    ukf_predict,
    ukf_predict_state,
    ukf_update,
    ukf_update_pda,
)
from sigmajax.models import (
    LinearControlModel,
    LinearDynamicModel,
    LinearObservationModel,
    NonlinearDynamicModel,
    NonlinearObservationModel,
    StateSpaceModel,
)

# ──────────────────────────────────────────────
# Helper functions
# ──────────────────────────────────────────────

F_CV = np.array([[1.0, 1.0], [0.0, 1.0]])
Q_CV = np.diag([0.01, 0.01])
H_POS = np.array([[1.0, 0.0]])
R_POS = np.array([[0.1]])


def _cv_model(control=None):
    """1-D constant velocity with position measurements."""
    return StateSpaceModel(
        dynamics=LinearDynamicModel(F=F_CV, Q=Q_CV),
        observation=LinearObservationModel(H=H_POS, R=R_POS),
        control=control,
    )


def _kf_predict(x, P, F, Q, H, R):
    """Closed-form linear Kalman filter prediction."""
    x_pred = F @ x
    P_pred = F @ P @ F.T + Q
    S = H @ P_pred @ H.T + R
    Pxz = P_pred @ H.T
    return x_pred, P_pred, H @ x_pred, S, Pxz


def _kf_update(x_pred, P_pred, z_pred, S, Pxz, z):
    """Closed-form linear Kalman filter update."""
    K = Pxz @ np.linalg.inv(S)
    x = x_pred + K @ (z - z_pred)
    P = P_pred - K @ S @ K.T
    return x, P


def _range_bearing(x):
    """Range and bearing to a planar position."""
    return jnp.array([jnp.hypot(x[0], x[2]), jnp.arctan2(x[2], x[0])])


def _turn_model():
    """Planar constant velocity [px, vx, py, vy] with range-bearing measurements."""
    dt = 1.0
    F = jnp.array(
        [[1.0, dt, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0], [0.0, 0.0, 1.0, dt], [0.0, 0.0, 0.0, 1.0]]
    )
    return StateSpaceModel(
        dynamics=NonlinearDynamicModel(lambda x: F @ x, jnp.eye(4) * 0.01),
        observation=NonlinearObservationModel(_range_bearing, jnp.diag(jnp.array([0.5, 1e-4]))),
    )


def _prediction():
    prior = FilterState(x=jnp.array([0.0, 1.0]), P=jnp.eye(2))
    return ukf_predict(prior, _cv_model())


# ──────────────────────────────────────────────
# Predict
# ──────────────────────────────────────────────


class TestUKFPredict:
    @pytest.mark.parametrize(
        "config",
        [UKFConfig(), UKFConfig(alpha=1.0), UKFConfig(alpha=0.3, kappa=1.0), CubatureSigmaPoints()],
    )
    def test_matches_linear_kalman_prediction(self, config):
        """Predict on a linear model equals the closed-form KF prediction."""
        x0 = np.array([0.5, -0.2])
        P0 = np.array([[1.5, 0.2], [0.2, 0.7]])
        pred = ukf_predict(FilterState(x=jnp.asarray(x0), P=jnp.asarray(P0)), _cv_model(), config)
        x_pred, P_pred, z_pred, S, Pxz = _kf_predict(x0, P0, F_CV, Q_CV, H_POS, R_POS)

        assert jnp.allclose(pred.state.x, x_pred, atol=1e-10)
        assert jnp.allclose(pred.state.P, P_pred, atol=1e-10)
        assert jnp.allclose(pred.measurement_mean, z_pred, atol=1e-10)
        assert jnp.allclose(pred.innovation_covariance, S, atol=1e-10)
        assert jnp.allclose(pred.cross_covariance, Pxz, atol=1e-10)

    def test_output_shapes(self):
        """Prediction fields have state and measurement dimensions."""
        pred = ukf_predict(
            FilterState(x=jnp.array([10.0, 1.0, 5.0, 0.0]), P=jnp.eye(4)), _turn_model()
        )
        assert isinstance(pred, UKFPrediction)
        assert pred.state.x.shape == (4,)
        assert pred.state.P.shape == (4, 4)
        assert pred.measurement_mean.shape == (2,)
        assert pred.innovation_covariance.shape == (2, 2)
        assert pred.cross_covariance.shape == (4, 2)

    def test_covariances_symmetric(self):
        """Predicted and innovation covariances are symmetric."""
        pred = ukf_predict(
            FilterState(x=jnp.array([10.0, 1.0, 5.0, 0.0]), P=jnp.eye(4)), _turn_model()
        )
        assert jnp.allclose(pred.state.P, pred.state.P.T, atol=1e-12)
        assert jnp.allclose(pred.innovation_covariance, pred.innovation_covariance.T, atol=1e-12)

    def test_covariance_grows(self):
        """Prediction increases the uncertainty."""
        P0 = jnp.eye(2) * 0.01
        pred = ukf_predict(FilterState(x=jnp.array([1.0, 0.5]), P=P0), _cv_model())
        assert jnp.all(jnp.diag(pred.state.P) > jnp.diag(P0))

    def test_control_model(self):
        """A control model adds B u to the mean and Qu to the covariance."""
        B = jnp.array([[0.5], [1.0]])
        u = jnp.array([2.0])
        Qu = jnp.eye(2) * 0.05
        control = LinearControlModel(B=B, u=u, Qu=Qu)
        x0 = jnp.array([0.0, 1.0])
        P0 = jnp.eye(2)

        with_control = ukf_predict(FilterState(x=x0, P=P0), _cv_model(control))
        without = ukf_predict(FilterState(x=x0, P=P0), _cv_model())

        assert jnp.allclose(with_control.state.x, without.state.x + B @ u, atol=1e-10)
        assert jnp.allclose(with_control.state.P, without.state.P + Qu, atol=1e-10)

    def test_predict_state_matches_predict(self):
        """State-only prediction equals the state part of the full prediction."""
        prior = FilterState(x=jnp.array([0.0, 1.0]), P=jnp.eye(2))
        model = _cv_model()
        full = ukf_predict(prior, model)
        state_only = ukf_predict_state(prior, model)
        assert jnp.allclose(full.state.x, state_only.x)
        assert jnp.allclose(full.state.P, state_only.P)

    def test_predict_state_without_observation_model(self):
        """State-only prediction does not need an observation model."""
        model = StateSpaceModel(dynamics=LinearDynamicModel(F=F_CV, Q=Q_CV))
        result = ukf_predict_state(FilterState(x=jnp.array([0.0, 1.0]), P=jnp.eye(2)), model)
        assert jnp.allclose(result.x, jnp.array([1.0, 1.0]))


class TestUKFPredictErrors:
    def test_missing_observation_model(self):
        """ukf_predict needs an observation model."""
        model = StateSpaceModel(dynamics=LinearDynamicModel(F=F_CV, Q=Q_CV))
        with pytest.raises(ConfigurationError, match="observation"):
            ukf_predict(FilterState(x=jnp.zeros(2), P=jnp.eye(2)), model)

    def test_model_without_transition(self):
        """A dynamic model lacking transition() is rejected."""

        class NoiseOnly:
            def process_noise_covariance(self):
                return jnp.eye(2)

        model = StateSpaceModel(
            dynamics=NoiseOnly(), observation=LinearObservationModel(H=H_POS, R=R_POS)
        )
        with pytest.raises(ConfigurationError, match="transition"):
            ukf_predict(FilterState(x=jnp.zeros(2), P=jnp.eye(2)), model)

    def test_zero_prior_covariance(self):
        """A degenerate prior raises rather than returning a result."""
        with pytest.raises(NumericalInstabilityError) as excinfo:
            ukf_predict(FilterState(x=jnp.zeros(2), P=jnp.zeros((2, 2))), _cv_model())
        assert excinfo.value.matrix_name == "state covariance"

    def test_state_dimension_mismatch(self):
        """A covariance that does not match the mean is rejected."""
        with pytest.raises(DimensionMismatchError, match="state covariance"):
            ukf_predict(FilterState(x=jnp.zeros(3), P=jnp.eye(2)), _cv_model())

    def test_measurement_noise_mismatch(self):
        """R must match the measurement dimension."""
        model = StateSpaceModel(
            dynamics=LinearDynamicModel(F=F_CV, Q=Q_CV),
            observation=NonlinearObservationModel(lambda x: x[:1], jnp.eye(2)),
        )
        with pytest.raises(DimensionMismatchError, match="measurement noise"):
            ukf_predict(FilterState(x=jnp.zeros(2), P=jnp.eye(2)), model)

    def test_transition_output_mismatch(self):
        """The transition function must preserve the state dimension."""
        model = StateSpaceModel(
            dynamics=NonlinearDynamicModel(lambda x: x[:1], jnp.eye(2)),
            observation=LinearObservationModel(H=H_POS, R=R_POS),
        )
        with pytest.raises(DimensionMismatchError):
            ukf_predict(FilterState(x=jnp.zeros(2), P=jnp.eye(2)), model)


# ──────────────────────────────────────────────
# Update
# ──────────────────────────────────────────────


class TestUKFUpdate:
    def test_constant_velocity_scenario(self):
        """One predict+update cycle matches the analytic Kalman filter to 1e-9."""
        x0 = np.array([0.0, 1.0])
        P0 = np.eye(2)
        z = np.array([1.05])

        pred = ukf_predict(
            FilterState(x=jnp.asarray(x0), P=jnp.asarray(P0)),
            _cv_model(),
            UKFConfig(alpha=0.5, kappa=0.0, beta=2.0),
        )
        result = ukf_update(pred, jnp.asarray(z))

        x_ref, P_ref = _kf_update(*_kf_predict(x0, P0, F_CV, Q_CV, H_POS, R_POS), z)

        assert np.allclose(np.asarray(result.state.x), x_ref, atol=1e-9, rtol=0.0)
        assert np.allclose(np.asarray(result.state.P), P_ref, atol=1e-9, rtol=0.0)

        # Hand-computed values
        assert x_ref[0] == pytest.approx(1.0 + 2.01 * 0.05 / 2.11)
        assert x_ref[1] == pytest.approx(1.0 + 0.05 / 2.11)

    def test_returns_diagnostics(self):
        """Update reports innovation, innovation covariance and gain."""
        pred = _prediction()
        result = ukf_update(pred, jnp.array([1.05]))
        assert isinstance(result, FilterResult)
        assert jnp.allclose(result.innovation, jnp.array([0.05]), atol=1e-12)
        assert jnp.allclose(result.innovation_covariance, pred.innovation_covariance)
        assert result.kalman_gain.shape == (2, 1)

    def test_measurement_reduces_uncertainty(self):
        """Update reduces the position variance."""
        pred = _prediction()
        result = ukf_update(pred, jnp.array([1.1]))
        assert float(result.state.P[0, 0]) < float(pred.state.P[0, 0])

    def test_state_moves_toward_measurement(self):
        """Update moves the position estimate toward the measurement."""
        pred = _prediction()
        result = ukf_update(pred, jnp.array([3.0]))
        assert abs(float(result.state.x[0]) - 3.0) < abs(float(pred.state.x[0]) - 3.0)

    def test_covariance_symmetric(self):
        """Updated covariance is symmetric for a nonlinear measurement."""
        pred = ukf_predict(
            FilterState(x=jnp.array([10.0, 1.0, 5.0, 0.0]), P=jnp.eye(4)), _turn_model()
        )
        result = ukf_update(pred, jnp.array([12.0, 0.45]))
        assert jnp.allclose(result.state.P, result.state.P.T, atol=1e-12)

    def test_measurement_dimension_mismatch(self):
        """A measurement of the wrong length is rejected."""
        with pytest.raises(DimensionMismatchError, match="measurement"):
            ukf_update(_prediction(), jnp.array([1.0, 2.0]))

    def test_singular_innovation_covariance(self):
        """A singular innovation covariance raises NumericalInstabilityError."""
        pred = _prediction()._replace(innovation_covariance=jnp.zeros((1, 1)))
        with pytest.raises(NumericalInstabilityError) as excinfo:
            ukf_update(pred, jnp.array([1.0]))
        assert excinfo.value.matrix_name == "innovation covariance"

    def test_near_singular_innovation_covariance(self):
        """A rank-one innovation covariance raises instead of giving a huge gain."""
        model = StateSpaceModel(
            dynamics=LinearDynamicModel(F=F_CV, Q=Q_CV),
            observation=LinearObservationModel(H=np.eye(2), R=np.eye(2) * 0.1),
        )
        pred = ukf_predict(FilterState(x=jnp.array([0.0, 1.0]), P=jnp.eye(2)), model)
        v = jnp.array([0.1, 0.3])
        pred = pred._replace(innovation_covariance=jnp.outer(v, v))
        with pytest.raises(NumericalInstabilityError) as excinfo:
            ukf_update(pred, jnp.array([1.0, 1.0]))
        assert excinfo.value.matrix_name == "innovation covariance"

    def test_indefinite_innovation_covariance(self):
        pred = _prediction()._replace(innovation_covariance=jnp.array([[-1.0]]))
        with pytest.raises(NumericalInstabilityError):
            ukf_update(pred, jnp.array([1.0]))

    def test_cross_covariance_shape_checked(self):
        """A cross-covariance inconsistent with the prediction is rejected."""
        pred = _prediction()._replace(cross_covariance=jnp.zeros((2, 2)))
        with pytest.raises(DimensionMismatchError, match="cross covariance"):
            ukf_update(pred, jnp.array([1.0]))


# ──────────────────────────────────────────────
# Probabilistic data association update
# ──────────────────────────────────────────────


class TestUKFUpdatePDA:
    def test_single_detection_equals_single_update(self):
        """Weights {0, 1} reproduce the single measurement update."""
        pred = _prediction()
        z = jnp.array([1.05])
        single = ukf_update(pred, z)
        pda = ukf_update_pda(pred, z[None, :], jnp.array([0.0, 1.0]))

        assert jnp.allclose(pda.state.x, single.state.x, atol=1e-12)
        assert jnp.allclose(pda.state.P, single.state.P, atol=1e-12)
        assert jnp.allclose(pda.innovation, single.innovation, atol=1e-12)
        assert jnp.allclose(pda.kalman_gain, single.kalman_gain, atol=1e-12)

    def test_matches_reference_formula(self):
        """Mean and covariance follow the PDAF equations."""
        pred = _prediction()
        Z = np.array([[0.7], [1.2], [1.6]])
        beta = np.array([0.1, 0.2, 0.5, 0.2])

        result = ukf_update_pda(pred, jnp.asarray(Z), jnp.asarray(beta))

        x_pred = np.asarray(pred.state.x)
        P_pred = np.asarray(pred.state.P)
        S = np.asarray(pred.innovation_covariance)
        K = np.asarray(pred.cross_covariance) @ np.linalg.inv(S)
        nus = Z - np.asarray(pred.measurement_mean)[None, :]
        nu = (beta[1:, None] * nus).sum(axis=0)
        spread = sum(b * np.outer(v, v) for b, v in zip(beta[1:], nus)) - np.outer(nu, nu)
        x_ref = x_pred + K @ nu
        P_ref = beta[0] * P_pred + (1.0 - beta[0]) * (P_pred - K @ S @ K.T) + K @ spread @ K.T

        assert np.allclose(np.asarray(result.state.x), x_ref, atol=1e-10)
        assert np.allclose(np.asarray(result.state.P), P_ref, atol=1e-10)
        assert np.allclose(np.asarray(result.innovation), nu, atol=1e-12)

    def test_ambiguity_inflates_covariance(self):
        """Spread-out hypotheses leave more uncertainty than a single detection."""
        pred = _prediction()
        single = ukf_update_pda(pred, jnp.array([[1.0]]), jnp.array([0.0, 1.0]))
        split = ukf_update_pda(pred, jnp.array([[0.0], [2.0]]), jnp.array([0.0, 0.5, 0.5]))
        assert float(split.state.P[0, 0]) > float(single.state.P[0, 0])

    def test_default_weights(self):
        """Default weights split evenly over measurements with no dummy mass."""
        pred = _prediction()
        Z = jnp.array([[0.8], [1.4]])
        default = ukf_update_pda(pred, Z)
        explicit = ukf_update_pda(pred, Z, jnp.array([0.0, 0.5, 0.5]))
        assert jnp.allclose(default.state.x, explicit.state.x)
        assert jnp.allclose(default.state.P, explicit.state.P)

    def test_no_detections(self):
        """With no measurements the prediction is returned."""
        pred = _prediction()
        result = ukf_update_pda(pred, jnp.zeros((0, 1)))
        assert jnp.allclose(result.state.x, pred.state.x)
        assert jnp.allclose(result.state.P, pred.state.P)
        assert jnp.allclose(result.innovation, 0.0)

    def test_all_weight_on_dummy(self):
        """beta_0 = 1 leaves the prediction unchanged."""
        pred = _prediction()
        result = ukf_update_pda(pred, jnp.array([[5.0]]), jnp.array([1.0, 0.0]))
        assert jnp.allclose(result.state.x, pred.state.x)
        assert jnp.allclose(result.state.P, pred.state.P)

    def test_covariance_symmetric(self):
        """PDA-updated covariance is symmetric."""
        pred = ukf_predict(
            FilterState(x=jnp.array([10.0, 1.0, 5.0, 0.0]), P=jnp.eye(4)), _turn_model()
        )
        Z = jnp.array([[12.0, 0.45], [11.5, 0.40]])
        result = ukf_update_pda(pred, Z, jnp.array([0.2, 0.5, 0.3]))
        assert jnp.allclose(result.state.P, result.state.P.T, atol=1e-12)

    def test_weights_must_sum_to_one(self):
        pred = _prediction()
        with pytest.raises(ConfigurationError, match="sum to 1"):
            ukf_update_pda(pred, jnp.array([[1.0]]), jnp.array([0.5, 0.6]))

    def test_weights_must_be_non_negative(self):
        pred = _prediction()
        with pytest.raises(ConfigurationError, match="non-negative"):
            ukf_update_pda(pred, jnp.array([[1.0], [2.0]]), jnp.array([-0.2, 0.6, 0.6]))

    @pytest.mark.parametrize("bad", [jnp.nan, jnp.inf])
    def test_weights_must_be_finite(self, bad):
        """Non-finite weights are rejected before any update is made."""
        pred = _prediction()
        with pytest.raises(ConfigurationError, match="finite"):
            ukf_update_pda(pred, jnp.array([[1.0]]), jnp.array([bad, 1.0]))

    def test_singular_innovation_covariance(self):
        pred = _prediction()._replace(innovation_covariance=jnp.zeros((1, 1)))
        with pytest.raises(NumericalInstabilityError, match="innovation covariance"):
            ukf_update_pda(pred, jnp.array([[1.0]]))

    def test_weight_length_mismatch(self):
        pred = _prediction()
        with pytest.raises(DimensionMismatchError, match="association weights"):
            ukf_update_pda(pred, jnp.array([[1.0], [2.0]]), jnp.array([0.0, 1.0]))

    def test_measurement_width_mismatch(self):
        pred = _prediction()
        with pytest.raises(DimensionMismatchError, match="measurements"):
            ukf_update_pda(pred, jnp.array([[1.0, 2.0]]), jnp.array([0.0, 1.0]))


# ──────────────────────────────────────────────
# JAX compatibility tests
# ──────────────────────────────────────────────


class TestJAXCompatibility:
    def test_jit_ukf_predict(self):
        """ukf_predict is JIT-compilable."""
        model = _cv_model()

        @jax.jit
        def step(x, P):
            return ukf_predict(FilterState(x=x, P=P), model)

        result = step(jnp.array([0.0, 1.0]), jnp.eye(2))
        assert jnp.all(jnp.isfinite(result.state.x))
        assert jnp.allclose(result.state.x, jnp.array([1.0, 1.0]))

    def test_jit_ukf_update(self):
        """ukf_update is JIT-compilable."""
        pred = _prediction()

        @jax.jit
        def step(pred, z):
            return ukf_update(pred, z)

        result = step(pred, jnp.array([1.05]))
        eager = ukf_update(pred, jnp.array([1.05]))
        assert jnp.allclose(result.state.x, eager.state.x)

    def test_jit_ukf_update_pda(self):
        """ukf_update_pda is JIT-compilable."""
        pred = _prediction()

        @jax.jit
        def step(pred, Z, w):
            return ukf_update_pda(pred, Z, w)

        result = step(pred, jnp.array([[1.0], [1.2]]), jnp.array([0.1, 0.45, 0.45]))
        assert jnp.all(jnp.isfinite(result.state.P))

    def test_lax_scan_ukf(self):
        """UKF predict+update composes with jax.lax.scan."""
        model = _cv_model()
        P0 = jnp.eye(2)
        fs0 = FilterState(x=jnp.array([0.0, 1.0]), P=P0)
        measurements = jnp.arange(1.0, 11.0)[:, None]

        def filter_step(fs, z):
            result = ukf_update(ukf_predict(fs, model), z)
            return result.state, result.innovation

        final_state, innovations = jax.lax.scan(filter_step, fs0, measurements)

        assert innovations.shape == (10, 1)
        assert jnp.all(jnp.isfinite(final_state.x))
        assert float(final_state.P[0, 0]) < float(P0[0, 0])
        assert float(final_state.x[0]) == pytest.approx(10.0, abs=0.5)
