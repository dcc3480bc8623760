from django.urls import path

from . import views

urlpatterns = [
    # commissions
    path('commission/breakdown', views.CommissionBreakdownView.as_view(), name='commission-breakdown'),
    path('commission/manual-adjustment', views.ManualAdjustmentView.as_view(), name='commission-manual-adjustment'),
    path('commission/all', views.DeleteAllCommissionsView.as_view(), name='commission-delete-all'),
    path('commission/reconciliation', views.LedgerReconciliationView.as_view(), name='commission-reconciliation'),

    # reports
    path('employees/<uuid:employee_id>/performance', views.EmployeePerformanceView.as_view(),
         name='employee-performance'),
    path('reports/summary', views.ReportsSummaryView.as_view(), name='reports-summary'),
    path('teams/analysis', views.TeamAnalysisView.as_view(), name='team-analysis'),

    # targets
    path('targets', views.TargetListView.as_view(), name='target-list'),
    path('targets/types', views.TargetTypesView.as_view(), name='target-types'),
    path('targets/categories', views.TargetCategoriesView.as_view(), name='target-categories'),
    path('targets/stats', views.TargetStatsView.as_view(), name='target-stats'),
    path('targets/analysis', views.TargetAnalysisView.as_view(), name='target-analysis'),
    path('targets/reset', views.TargetResetView.as_view(), name='target-reset'),
    path('targets/<uuid:target_id>', views.TargetDetailView.as_view(), name='target-detail'),

    # visits
    path('visits', views.VisitCreateView.as_view(), name='visit-create'),
    path('visits/<uuid:visit_id>/classification', views.VisitClassificationView.as_view(),
         name='visit-classification'),
    path('visits/<uuid:visit_id>/specialities', views.VisitSpecialityView.as_view(), name='visit-specialities'),

    # follow-up
    path('follow-up/tasks', views.FollowUpTaskListView.as_view(), name='follow-up-tasks'),
    path('follow-up/tasks/<uuid:task_id>/complete', views.FollowUpTaskCompleteView.as_view(),
         name='follow-up-task-complete'),

    # nominations
    path('nominations', views.NominationCreateView.as_view(), name='nomination-create'),
    path('nominations/<uuid:nomination_id>/status', views.NominationStatusView.as_view(), name='nomination-status'),
    path('nominations/<uuid:nomination_id>/convert', views.NominationConvertView.as_view(),
         name='nomination-convert'),

    # reference data
    path('hospitals', views.HospitalListView.as_view(), name='hospital-list'),
]
