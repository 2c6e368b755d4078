# taxa_network/classifier.py
"""
Random Forest models of metadata groups from taxon abundances.

Categorical (or few-valued numeric) labels are modelled by classification,
continuous labels by regression. Each fit reports out-of-bag error against a
naive baseline, held-out performance, cross-validation scores and a label
permutation test of model significance.
"""

import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.inspection import permutation_importance
from sklearn.metrics import (
    accuracy_score,
    balanced_accuracy_score,
    confusion_matrix,
    mean_squared_error,
    r2_score,
    roc_auc_score,
)
from sklearn.model_selection import (
    KFold,
    StratifiedKFold,
    cross_val_score,
    permutation_test_score,
    train_test_split,
)

from .config import TaxaNetworkConfig

logger = logging.getLogger(__name__)


class RandomForestAnalysis:
    """Trains and evaluates a Random Forest on a samples x taxa table."""

    def __init__(self, config: TaxaNetworkConfig):
        self.config = config
        self.model = None
        self.task = None
        self.X_test = None
        self.y_test = None

    def is_classification(self, labels: pd.Series) -> bool:
        """Non-numeric labels, or numeric labels with few distinct values, are classes."""
        if not pd.api.types.is_numeric_dtype(labels) or pd.api.types.is_bool_dtype(labels):
            return True
        return labels.nunique() <= self.config.max_classes_for_classification

    def _forest_params(self) -> Dict:
        return dict(
            n_estimators=self.config.n_estimators,
            max_features=self.config.max_features,
            random_state=self.config.random_state,
        )

    def fit(self, data: pd.DataFrame, labels: pd.Series) -> Dict:
        """
        Fit the model appropriate for ``labels`` and evaluate it.

        Args:
            data: Samples x taxa feature table.
            labels: Metadata values for the same samples.

        Returns:
            Dictionary of evaluation results ('task' is 'classification' or
            'regression').

        Raises:
            ValueError: If data and labels differ in length, there are fewer
                than two classes, or a class has fewer than two samples.
        """
        if data.empty or labels.empty:
            raise ValueError("Data or labels cannot be empty.")
        if len(data) != len(labels):
            raise ValueError("Data and labels must have the same number of samples.")

        if self.is_classification(labels):
            self.task = 'classification'
            results = self._fit_classifier(data, labels.astype(str))
        else:
            self.task = 'regression'
            results = self._fit_regressor(data, labels.astype(float))
        results['task'] = self.task
        results['n_samples'] = int(len(data))
        results['n_features'] = int(data.shape[1])
        return results

    def _fit_classifier(self, data: pd.DataFrame, labels: pd.Series) -> Dict:
        class_counts = labels.value_counts()
        if len(class_counts) < 2:
            raise ValueError("At least two classes are required for classification.")
        if class_counts.min() < 2:
            raise ValueError(
                f"Every class needs at least two samples; smallest is '{class_counts.idxmin()}' "
                f"with {class_counts.min()}."
            )
        logger.info(f"📊 {len(class_counts)} classes: {class_counts.to_dict()}")

        X_train, X_test, y_train, y_test = train_test_split(
            data, labels, test_size=self.config.test_size,
            random_state=self.config.random_state, stratify=labels
        )

        model = RandomForestClassifier(oob_score=True, **self._forest_params())
        logger.info("Starting Random Forest training...")
        model.fit(X_train, y_train)
        logger.info("Model training completed.")

        oob_error = 1.0 - model.oob_score_
        baseline_error = 1.0 - y_train.value_counts(normalize=True).max()

        y_pred = model.predict(X_test)
        roc_auc = None
        if len(model.classes_) == 2 and y_test.nunique() == 2:
            proba = model.predict_proba(X_test)[:, 1]
            roc_auc = float(roc_auc_score(y_test == model.classes_[1], proba))

        folds = min(self.config.cross_validation_folds, int(class_counts.min()))
        cv = StratifiedKFold(n_splits=folds, shuffle=True, random_state=self.config.random_state)
        cv_scores = cross_val_score(
            RandomForestClassifier(**self._forest_params()), data, labels, cv=cv, scoring='accuracy'
        )

        self.model, self.X_test, self.y_test = model, X_test, y_test
        return {
            'classes': [str(c) for c in model.classes_],
            'class_counts': {str(k): int(v) for k, v in class_counts.items()},
            'oob_error': float(oob_error),
            'baseline_error': float(baseline_error),
            'error_ratio': float(baseline_error / oob_error) if oob_error > 0 else None,
            'test_accuracy': float(accuracy_score(y_test, y_pred)),
            'test_balanced_accuracy': float(balanced_accuracy_score(y_test, y_pred)),
            'test_roc_auc': roc_auc,
            'confusion_matrix': confusion_matrix(y_test, y_pred, labels=model.classes_).tolist(),
            'cross_validation': {
                'scoring': 'accuracy',
                'folds': int(folds),
                'mean': float(np.mean(cv_scores)),
                'std': float(np.std(cv_scores)),
                'scores': cv_scores.tolist(),
            },
            'permutation_test': self._permutation_test(
                RandomForestClassifier(**self._forest_params()), data, labels, cv, 'accuracy'
            ),
        }

    def _fit_regressor(self, data: pd.DataFrame, labels: pd.Series) -> Dict:
        X_train, X_test, y_train, y_test = train_test_split(
            data, labels, test_size=self.config.test_size, random_state=self.config.random_state
        )

        model = RandomForestRegressor(oob_score=True, **self._forest_params())
        logger.info("Starting Random Forest regression...")
        model.fit(X_train, y_train)
        logger.info("Model training completed.")

        oob_mse = float(np.nanmean((model.oob_prediction_ - y_train.to_numpy()) ** 2))
        baseline_mse = float(np.mean((y_train - y_train.mean()) ** 2))
        y_pred = model.predict(X_test)

        folds = min(self.config.cross_validation_folds, len(data))
        cv = KFold(n_splits=folds, shuffle=True, random_state=self.config.random_state)
        cv_scores = cross_val_score(
            RandomForestRegressor(**self._forest_params()), data, labels, cv=cv, scoring='r2'
        )

        self.model, self.X_test, self.y_test = model, X_test, y_test
        return {
            'oob_r2': float(model.oob_score_),
            'oob_mse': oob_mse,
            'baseline_mse': baseline_mse,
            'error_ratio': float(baseline_mse / oob_mse) if oob_mse > 0 else None,
            'test_mse': float(mean_squared_error(y_test, y_pred)),
            'test_r2': float(r2_score(y_test, y_pred)) if len(y_test) > 1 else None,
            'cross_validation': {
                'scoring': 'r2',
                'folds': int(folds),
                'mean': float(np.mean(cv_scores)),
                'std': float(np.std(cv_scores)),
                'scores': cv_scores.tolist(),
            },
            'permutation_test': self._permutation_test(
                RandomForestRegressor(**self._forest_params()), data, labels, cv, 'r2'
            ),
        }

    def _permutation_test(self, estimator, data: pd.DataFrame, labels: pd.Series, cv, scoring: str) -> Optional[Dict]:
        n_permutations = self.config.n_model_permutations
        if not n_permutations:
            return None
        logger.info(f"🔀 Testing model significance with {n_permutations} label permutations...")
        score, permutation_scores, p_value = permutation_test_score(
            estimator, data, labels, cv=cv, scoring=scoring,
            n_permutations=n_permutations, random_state=self.config.random_state
        )
        return {
            'score': float(score),
            'null_mean': float(np.mean(permutation_scores)),
            'null_std': float(np.std(permutation_scores)),
            'p_value': float(p_value),
            'significant': bool(p_value < self.config.fdr_threshold),
            'n_permutations': int(n_permutations),
        }

    def feature_importances(self, top_n: Optional[int] = None, n_repeats: int = 10) -> pd.DataFrame:
        """
        Impurity and held-out permutation importance of every taxon.

        Returns:
            DataFrame indexed by taxon, sorted by decreasing permutation
            importance.

        Raises:
            RuntimeError: If called before ``fit``.
        """
        if self.model is None:
            raise RuntimeError("Model has not been fitted.")

        permuted = permutation_importance(
            self.model, self.X_test, self.y_test,
            n_repeats=n_repeats, random_state=self.config.random_state
        )
        importances = pd.DataFrame({
            'impurity_importance': self.model.feature_importances_,
            'permutation_importance': permuted.importances_mean,
            'permutation_importance_std': permuted.importances_std,
        }, index=self.X_test.columns)
        importances = importances.sort_values(
            ['permutation_importance', 'impurity_importance'], ascending=False
        )
        return importances.head(top_n) if top_n else importances
