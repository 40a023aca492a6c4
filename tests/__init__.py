import os
import tempfile

# 测试使用内存库，且不启动后台清理线程；必须在导入 core 之前设置
os.environ.setdefault("DB", "sqlite://")
os.environ.setdefault("TASK_SWEEP_ENABLED", "false")
os.environ.setdefault("SUPABASE_JWT_SECRET", "lexilens-test-secret-0123456789abcdef")
os.environ.setdefault("AUDIO_CACHE_DIR", tempfile.mkdtemp(prefix="lexilens-audio-"))
