# 导入用户模型
from .user import User
# 导入用量与统计模型
from .daily_usage import DailyUsage
from .user_limit import UserLimit
from .user_stats import UserStats
from .achievement import Achievement
# 导入分析任务与收藏模型
from .analysis_task import AnalysisTask
from .saved_analysis import SavedAnalysis
# 导入管理日志模型
from .admin_log import AdminLog
# 导入基础模型
from .base import *
