"""
Tests for calculate_p_k
"""

import logging

import pandas as pd
import pytest

from castleguard.disclosure_risk_metrics import calculate_p_k

_LOGGER = logging.getLogger(__name__)


class TestK:
    """
    Tests for calculate_p_k for k.
    """

    # pylint: disable=missing-function-docstring,no-self-use

    @property
    def qid_cols(self):
        return ["age", "color"]

    def test_k_1(self):
        df = pd.DataFrame(
            {
                "age": ["[1, 3]"],
                "color": ["{red}"],
                "sensitive": ["A"],
                "relaxed": [False],
            }
        )
        assert calculate_p_k(df, self.qid_cols)[1] == 1

    def test_k_2(self):
        df = pd.DataFrame(
            {
                "age": ["[1, 3]", "[1, 3]", "[9, 11]", "[9, 11]", "[9, 11]"],
                "color": ["{red}", "{red}", "{blue}", "{blue}", "{blue}"],
                "sensitive": ["A", "B", "A", "B", "A"],
                "relaxed": [False] * 5,
            }
        )
        assert calculate_p_k(df, self.qid_cols)[1] == 2

    def test_k_no_qids(self):
        df = pd.DataFrame(
            {
                "age": ["[1, 3]", "[9, 11]", "[9, 11]"],
                "color": ["{red}", "{blue}", "{blue}"],
                "sensitive": ["A", "B", "A"],
            }
        )
        assert calculate_p_k(df, [])[1] == 3

    def test_relaxed_excluded(self):
        df = pd.DataFrame(
            {
                "age": ["[1, 3]", "[1, 3]", "[9, 9]"],
                "color": ["{red}", "{red}", "{blue}"],
                "sensitive": ["A", "B", "A"],
                "relaxed": [False, False, True],
            }
        )
        assert calculate_p_k(df, self.qid_cols) == (2, 2)
        assert calculate_p_k(df, self.qid_cols, exclude_relaxed=False) == (1, 1)

    def test_only_relaxed(self):
        df = pd.DataFrame(
            {"age": ["[9, 9]"], "color": ["{blue}"], "sensitive": ["A"], "relaxed": [True]}
        )
        assert calculate_p_k(df, self.qid_cols) == (None, None)


class TestP:
    """
    Tests for calculate_p_k for p.
    """

    # pylint: disable=missing-function-docstring,no-self-use

    @property
    def qid_cols(self):
        return ["age", "color"]

    def test_p_1(self):
        df = pd.DataFrame(
            {
                "age": ["[1, 3]", "[1, 3]", "[9, 11]", "[9, 11]"],
                "color": ["{red}", "{red}", "{blue}", "{blue}"],
                "sensitive": ["A", "A", "A", "B"],
            }
        )
        assert calculate_p_k(df, self.qid_cols)[0] == 1

    def test_p_2(self):
        df = pd.DataFrame(
            {
                "age": ["[1, 3]", "[1, 3]", "[1, 3]", "[9, 11]", "[9, 11]"],
                "color": ["{red}", "{red}", "{red}", "{blue}", "{blue}"],
                "sensitive": ["A", "B", "C", "A", "B"],
            }
        )
        assert calculate_p_k(df, self.qid_cols) == (2, 2)

    def test_no_sens_attr(self):
        df = pd.DataFrame({"age": ["[1, 3]", "[1, 3]"], "color": ["{red}", "{red}"]})
        assert calculate_p_k(df, self.qid_cols, sens_attr=None) == (None, 2)

    def test_sens_attr_in_qids_removal(self):
        """sens_attr listed among the qids is not used as a qid"""
        df = pd.DataFrame({"qid1": [1, 1, 2, 2], "sens": ["A", "B", "A", "B"]})
        assert calculate_p_k(df, qids=["qid1", "sens"], sens_attr="sens") == (2, 2)


class TestErrors:
    """
    Tests for invalid input to calculate_p_k.
    """

    # pylint: disable=missing-function-docstring,no-self-use

    def test_empty(self):
        with pytest.raises(ValueError):
            calculate_p_k(pd.DataFrame({"age": [], "sensitive": []}), ["age"])

    def test_missing_columns(self):
        df = pd.DataFrame({"age": ["[1, 3]"], "sensitive": ["A"]})
        with pytest.raises(ValueError):
            calculate_p_k(df, ["zip"])
        with pytest.raises(ValueError):
            calculate_p_k(df, ["age"], sens_attr="disease")
