from lassopkg.development import DevelopmentParams, LassoDevelopment
from lassopkg.plotting import plot_cv_curve, plot_pr_curves, plot_rocs


import numpy as np
import pandas as pd


# Synthetic readmission table: two lab values, a gender flag and a 4-level admission source
rng = np.random.default_rng(42)
n = 1000

df = pd.DataFrame(
    {
        "PatientEncounterID": np.arange(n),
        "SystolicBPNBR": rng.normal(130, 15, size=n),
        "LDLNBR": rng.normal(110, 30, size=n),
        "A1CNBR": rng.normal(6.5, 1.2, size=n),
        "GenderFLG": rng.choice(["F", "M"], size=n),
        "AdmitSource": rng.choice(["ER", "Clinic", "Transfer", "Other"], size=n),
    }
)

eta = -0.5 + 0.8 * (df["A1CNBR"] - 6.5) + np.where(df["AdmitSource"] == "ER", 0.7, 0.0)
df["ThirtyDayReadmitFLG"] = np.where(rng.uniform(size=n) < 1 / (1 + np.exp(-eta)), "Y", "N")

# A few holes to show imputation
df.loc[rng.choice(n, 30, replace=False), "LDLNBR"] = np.nan


# Classification
p = DevelopmentParams(
    df=df,
    model_type="classification",
    predicted_col="ThirtyDayReadmitFLG",
    grain_col="PatientEncounterID",
    impute=True,
    debug=False,
    var_imp=True,
    n_jobs=4,
    model_dir="models",
)

lasso = LassoDevelopment(p)
lasso.run()

plot_rocs([lasso.get_roc()], ["Lasso"], legend_loc="lower right")
plot_pr_curves([lasso.get_pr_curve()], ["Lasso"], legend_loc="lower left")
plot_cv_curve(lasso.get_fit())


# Regression on the same table
p_reg = DevelopmentParams(
    df=df.drop(columns="ThirtyDayReadmitFLG"),
    model_type="regression",
    predicted_col="A1CNBR",
    grain_col="PatientEncounterID",
    impute=True,
    n_lambda=50,
)

lasso_reg = LassoDevelopment(p_reg)
lasso_reg.run()
print(lasso_reg.get_rmse(), lasso_reg.get_mae())
lasso_reg.get_roc()
